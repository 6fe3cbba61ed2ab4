from . import agent, health, metrics, nodes, releases, sub, subscriptions, system, templates

__all__ = ["agent", "health", "metrics", "nodes", "releases", "sub", "subscriptions", "system", "templates"]
