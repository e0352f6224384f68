"""
Domain entities: actors, resources, and API payload models.
"""
