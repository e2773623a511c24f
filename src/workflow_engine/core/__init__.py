"""Workflow state machine core.

Provides:
- Entity models (definitions, states, actions, instances)
- Definition validation
- Instance creation and action application
- Pluggable storage and a service facade over all of the above
"""
