"""
Command cogs for the Discord front-end.
"""
