"""
Services module for telematics tracker business logic.

Service functions encapsulate polling, state merging and battery health
logic separate from the Flask route handlers.
"""
