"""Transcoding module: encrypted multi-track HLS packaging.

Probes an uploaded source, encodes audio and video renditions in parallel
with AES-128 segment encryption, hides segment and key file names, and
writes the master playlist.
"""
