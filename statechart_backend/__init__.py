"""
Statechart Backend - Project management, rendering, export and the REST API.
"""
