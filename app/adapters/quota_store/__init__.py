"""Quota store adapters.

This package hides where quota counters live. The in-memory store serves a
single process; the Redis store lets a fleet of instances share one set of
counters. Both expose the same three atomic primitives.
"""
