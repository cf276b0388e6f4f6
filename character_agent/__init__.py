"""Character extraction agent for the task-coordination network."""

__version__ = "0.1.0"
