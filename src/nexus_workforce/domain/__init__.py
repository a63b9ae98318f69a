"""
nexus-workforce domain layer.

Purpose
- Domain types shared by every control-plane component: roles, workers,
  tasks, approval gates, workload profiles, allocation compositions, events.

Functional requirements
- Domain objects are serializable (``to_dict``) and free of IO side effects.
"""
