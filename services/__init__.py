"""
Remote collaborators of the DataLens dashboard: document store, user API,
AI highlighter and session auth
"""
