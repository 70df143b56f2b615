"""
HR Workflow Kernel

The request/approval engine shared by document requests, salary advances
and the employment-contract lifecycle:
- Declarative, role-gated status machines
- Optimistic-concurrency instance store with append-only history
- Structured logging and a typed error taxonomy
"""

__version__ = "0.1.0"
