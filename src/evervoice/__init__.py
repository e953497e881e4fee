# EverVoice - local speech capture and transcription core

"""
Microphone capture, rate conversion and WAV export, plus lifecycle
management for locally-resident speech models.
"""

__version__ = "0.1.0"
__app_name__ = "EverVoice"
