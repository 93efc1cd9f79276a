"""Core orchestration components: models, collaborators, pool, controller."""
