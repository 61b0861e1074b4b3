"""auth/ -- Credential verification, token issuing/validation, and session flows.

Layer rule: auth/ imports only stdlib, third-party libraries, core/, and the
MediaUploader protocol from media/. It does NOT import from api/.
api/ imports from auth/, not the other way around.
"""
