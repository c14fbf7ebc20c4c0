"""The in-sandbox runner script and its output protocol.

The runner is uploaded into every sandbox during preparation.  Each
execution writes a JSON request file and invokes::

    python3 {RUNNER_PATH} {request_path}

The request carries ``provider``, ``model``, ``temperature``,
``max_tokens``, ``system`` and ``prompt``.  The runner makes exactly one
model call and prints a single JSON line to stdout:
``{"success": true, "output": ...}`` or ``{"success": false, "error": ...}``.
Anything else the provider SDK prints is ignored by the parser.
"""

from __future__ import annotations

import json

from coherex.agent_runtime.errors import ExecutionError

SANDBOX_HOME = "/home/user/.coherex"
RUNNER_PATH = f"{SANDBOX_HOME}/runner.py"

RUNNER_SCRIPT = '''\
import json
import os
import sys


def call_openai(req):
    from openai import OpenAI

    client = OpenAI(api_key=os.environ.get("OPENAI_API_KEY"))
    response = client.chat.completions.create(
        model=req["model"],
        messages=[
            {"role": "system", "content": req["system"]},
            {"role": "user", "content": req["prompt"]},
        ],
        temperature=req["temperature"],
        max_tokens=req["max_tokens"],
    )
    return response.choices[0].message.content


def call_anthropic(req):
    from anthropic import Anthropic

    client = Anthropic(api_key=os.environ.get("ANTHROPIC_API_KEY"))
    response = client.messages.create(
        model=req["model"],
        system=req["system"],
        messages=[{"role": "user", "content": req["prompt"]}],
        temperature=req["temperature"],
        max_tokens=req["max_tokens"],
    )
    return "".join(block.text for block in response.content if getattr(block, "type", "") == "text")


def main(path):
    with open(path, encoding="utf-8") as f:
        req = json.load(f)
    try:
        if req.get("provider") == "openai":
            output = call_openai(req)
        elif req.get("provider") == "anthropic":
            output = call_anthropic(req)
        else:
            raise RuntimeError("No model provider for %r" % req.get("model"))
    except Exception as exc:
        print(json.dumps({"success": False, "error": "%s: %s" % (type(exc).__name__, exc)}))
        return 1
    print(json.dumps({"success": True, "output": output}))
    return 0


if __name__ == "__main__":
    sys.exit(main(sys.argv[1]))
'''


def parse_runner_output(stdout: str) -> dict:
    """Return the runner's result object from *stdout*.

    The last line that parses as a JSON object with a ``success`` key wins.
    Raises ``ExecutionError`` if there is none.
    """
    for line in reversed(stdout.splitlines()):
        line = line.strip()
        if not line.startswith("{"):
            continue
        try:
            payload = json.loads(line)
        except json.JSONDecodeError:
            continue
        if isinstance(payload, dict) and "success" in payload:
            return payload
    msg = "Runner produced no result"
    raise ExecutionError(msg)
