"""
MediaScribe: chunked media uploads, FFmpeg segmentation and Gemini transcription
"""

__version__ = "1.0.0"
