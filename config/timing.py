"""
Timing Settings - Playback delays, voice timeouts and watchdog intervals

These are fixed constants. Reconnection tuning (attempts, probe timeout,
rejoin delay) lives in settings.yaml because deployments differ there.
"""

# =========================================================================================================
# PLAYBACK DELAYS
# =========================================================================================================

MANUAL_SKIP_DELAY = 0.5            # Seconds between !skip and resolving the next track
                                   # LOWER = snappier skips, HIGHER = fewer resolver calls when spammed

AUTO_SKIP_DELAY = 2.0              # Seconds before the next track after a song ends or fails
                                   # Keep this above MANUAL_SKIP_DELAY so a broken playlist
                                   # doesn't hammer YouTube

LOCAL_RESTART_DELAY = 1.0          # Seconds before the local file loops back to the start

FAILURE_PASSES = 3                 # Default full playlist passes of resolve failures before giving up
                                   # settings.yaml playback.failure_passes overrides it (2-20)

# =========================================================================================================
# VOICE CONNECTION
# =========================================================================================================

VOICE_CONNECT_TIMEOUT = 30.0       # Seconds to wait for a voice handshake before giving up
                                   # Passed straight to VoiceChannel.connect(timeout=...)

VOICE_CONNECTION_CHECK_INTERVAL = 0.25  # Seconds between polls while waiting for a link to recover

# =========================================================================================================
# WATCHDOG
# =========================================================================================================

WATCHDOG_INTERVAL = 30             # Seconds between voice health checks
                                   # LOWER = faster detection of silently dead links

# =========================================================================================================
# SHUTDOWN
# =========================================================================================================

SHUTDOWN_TIMEOUT = 10.0            # Seconds allowed for tearing down every guild on exit
