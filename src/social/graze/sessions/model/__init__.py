"""
Data Models

This package defines the data structures of the session manager.

Key Models:
- session.py: Pydantic models for cookie sessions, stored OAuth sessions,
  OAuth state, refresh inputs and result envelopes
- storage.py: SQLAlchemy base and model for the database-backed session store

The data models follow these relationships:
- StoredOAuthSession: One per DID, the source of truth for "signed in"
- CookieSessionData: Sealed into the browser cookie, points at a DID
- Mobile tokens: Sealed ``{did}`` pointers, never stored

All timestamps in the pydantic models are milliseconds since the Unix epoch.
"""
