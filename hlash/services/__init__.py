"""
hlash services:
- subscription - download, validate and swap the live config
- engine - clash process and its reload channel
- system - OS service control and the local health endpoint
"""
