"""Domain Interfaces (Ports).

Abstract contracts the infrastructure layer implements.
"""
