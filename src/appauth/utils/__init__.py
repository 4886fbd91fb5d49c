"""
Helper utilities shared by the protocol models and the orchestrator.
"""
