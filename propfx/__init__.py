"""
propfx: media-zone playback controller for props and installations.

Each configured zone drives its own mpv engine processes (background music,
speech, video) over mpv's JSON IPC socket, plus a host-wide pool of
fire-and-forget sound effect processes.

Run the service via: propfx serve
"""
