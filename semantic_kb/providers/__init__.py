"""Concrete adapters for the interfaces in :mod:`semantic_kb.interfaces`.

Sub-packages group adapters by capability: ``cache``, ``converter``,
``embedding``, ``registry`` and ``vector_store``.
"""
