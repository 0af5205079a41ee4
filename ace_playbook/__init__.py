"""ACE playbook engine: per-project playbooks that learn from agent runs."""

__version__ = "0.1.0"
