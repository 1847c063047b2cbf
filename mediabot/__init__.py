"""
Mediabot - WhatsApp media automation agent

A conversational agent that plans multi-step requests, runs media
generation tools against interchangeable providers with fallback,
and assembles a single coherent reply per chat message.
"""

__version__ = "0.1.0"
__author__ = "Mediabot Team"
