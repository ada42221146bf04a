"""Concrete execution adapters. Look them up through :func:`spool.adapter.get_adapter`."""
