"""
Orders package: edit session state machine, reconstruction and edit session.
"""
