"""Domain Layer: value objects, outcome types, events and interfaces.

Nothing in here performs I/O.
"""
