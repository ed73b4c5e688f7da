"""
Account self-service: view, edit and delete the signed-in user's own profile.
"""
