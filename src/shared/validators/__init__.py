"""Shared validators package.

Available validators:
- password.py: Password strength validation
"""
