"""Core Application Layer: session and API use cases.

Connects the domain layer with the infrastructure layer through interfaces.
"""
