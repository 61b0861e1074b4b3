"""media/ -- Staging and uploading of user-supplied image files.

Layer rule: media/ imports from core/ only. It does NOT import from api/ or
auth/. auth/sessions.py receives an uploader; it never builds one.
"""
