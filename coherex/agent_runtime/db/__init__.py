"""PostgreSQL access: engine factory and ORM tables."""
