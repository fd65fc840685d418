"""Presets for commonly used service containers.

Each preset module exposes a container option (``postgres_container()``,
``mongo_container()``, ``localstack_container()``) to pass to
``new_container_definition`` or ``ContainerBuilder.apply``, plus helpers
building the address clients connect to.
"""

from . import localstack, mongodb, postgres

__all__ = ["localstack", "mongodb", "postgres"]
