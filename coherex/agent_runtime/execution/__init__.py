"""Execution pipeline for the agent runtime.

This package contains the core execution components:

- **prompt**: System prompt and effective prompt rendering (Jinja2 templates)
- **runner**: The in-sandbox runner script and its output protocol
- **environment**: Sandbox preparation (provider env vars, packages, runner upload)
- **runtime**: One agent turn inside a prepared sandbox
- **simulation**: Tagged placeholder output when no sandbox is available
- **coordinator**: Execution orchestration (validate -> record -> route -> finalize)
"""
