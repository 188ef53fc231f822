"""CloudWard: multi-framework policy evaluation for cloud resource inventories."""

__version__ = "0.1.0"
