import pytest

from core.effects import (
    CancelPending,
    Log,
    Notify,
    RequestTeardown,
    ResolveTrack,
    ScheduleStart,
    StopAudio,
    StreamTrack,
)
from core.errors import PlaybackError, ResolutionError, ResolutionErrorKind
from core.modes import PlaybackMode
from core.player import (
    PlaybackPolicy,
    PlaybackResumed,
    PlaybackSuspended,
    PlayerState,
    PlayRequested,
    ResolveFailed,
    SkipRequested,
    StartDue,
    StopRequested,
    TrackFinished,
    TrackResolved,
    new_session,
    transition,
)
from core.playlist import PlaylistStore
from core.resolver import ResolvedTrack

POLICY = PlaybackPolicy(manual_skip_delay=0.5, auto_skip_delay=2.0, local_restart_delay=1.0)


def of_type(effects, kind):
    return [effect for effect in effects if isinstance(effect, kind)]


def notices(effects):
    return [effect.key for effect in of_type(effects, Notify)]


def youtube_session(*entries):
    return new_session(PlaylistStore(entries or ("a", "b", "c")), PlaybackMode.YOUTUBE)


def playing(session):
    """Drive a session from STOPPED through resolve to PLAYING."""
    session, effects = transition(session, PlayRequested(), POLICY)
    resolve = of_type(effects, ResolveTrack)[0]
    track = ResolvedTrack(reference=resolve.reference, source=resolve.reference, title="Song")
    session, _ = transition(session, TrackResolved(resolve.epoch, track), POLICY)
    return session


def test_play_from_stopped_resolves_first_track():
    session, effects = transition(youtube_session(), PlayRequested(), POLICY)

    assert session.state == PlayerState.STARTING
    assert notices(effects) == ["started"]
    assert of_type(effects, Notify)[0].params == {"count": 3}
    resolve = of_type(effects, ResolveTrack)[0]
    assert (resolve.epoch, resolve.index, resolve.reference) == (session.epoch, 0, "a")


def test_play_when_active_only_notifies():
    session, _ = transition(youtube_session(), PlayRequested(), POLICY)
    again, effects = transition(session, PlayRequested(), POLICY)

    assert again == session
    assert effects == [Notify("already_playing")]


def test_skip_when_not_active_is_noop():
    session = youtube_session()
    after, effects = transition(session, SkipRequested(), POLICY)

    assert after == session
    assert effects == [Notify("nothing_playing")]


def test_resolved_track_starts_streaming():
    session = playing(youtube_session())

    assert session.state == PlayerState.PLAYING
    assert session.current_title == "Song"


def test_stale_resolve_is_dropped():
    session, effects = transition(youtube_session(), PlayRequested(), POLICY)
    stale_epoch = of_type(effects, ResolveTrack)[0].epoch
    session, _ = transition(session, StopRequested(), POLICY)

    track = ResolvedTrack(reference="a", source="a", title="Song")
    after, effects = transition(session, TrackResolved(stale_epoch, track), POLICY)

    assert after.state == PlayerState.STOPPED
    assert not of_type(effects, StreamTrack)


def test_skips_walk_playlist_and_wrap():
    session = playing(youtube_session("a", "b", "c"))

    positions = []
    for _ in range(3):
        session, effects = transition(session, SkipRequested(), POLICY)
        assert "skipped" in notices(effects)
        assert of_type(effects, ScheduleStart)[0].delay == 0.5
        positions.append(session.store.cursor)

    assert positions == [1, 2, 0]


def test_skip_cancels_pending_work_and_stops_audio():
    session = playing(youtube_session())
    _, effects = transition(session, SkipRequested(), POLICY)

    assert isinstance(effects[0], CancelPending)
    assert isinstance(effects[1], StopAudio)


def test_finished_youtube_track_advances_after_auto_delay():
    session = playing(youtube_session())
    session, effects = transition(session, TrackFinished(session.epoch), POLICY)

    assert session.state == PlayerState.IDLE
    assert session.store.cursor == 1
    start = of_type(effects, ScheduleStart)[0]
    assert (start.epoch, start.delay) == (session.epoch, 2.0)


def test_start_due_resolves_next_track():
    session = playing(youtube_session())
    session, effects = transition(session, TrackFinished(session.epoch), POLICY)
    session, effects = transition(session, StartDue(of_type(effects, ScheduleStart)[0].epoch), POLICY)

    assert session.state == PlayerState.STARTING
    assert of_type(effects, ResolveTrack)[0].reference == "b"


def test_start_due_with_old_epoch_is_ignored():
    session = playing(youtube_session())
    session, effects = transition(session, TrackFinished(session.epoch), POLICY)
    old_epoch = of_type(effects, ScheduleStart)[0].epoch
    session, _ = transition(session, SkipRequested(), POLICY)

    after, effects = transition(session, StartDue(old_epoch), POLICY)
    assert after == session
    assert effects == []


def test_finished_event_from_stopped_track_is_ignored():
    session = playing(youtube_session())
    finished_epoch = session.epoch
    session, _ = transition(session, SkipRequested(), POLICY)

    after, effects = transition(session, TrackFinished(finished_epoch), POLICY)
    assert after == session
    assert effects == []


def test_local_mode_restarts_same_file():
    session = playing(new_session(PlaylistStore.single("/music/song.mp3"), PlaybackMode.LOCAL))
    session, effects = transition(session, TrackFinished(session.epoch), POLICY)

    assert session.store.cursor == 0
    assert of_type(effects, ScheduleStart)[0].delay == 1.0


def test_local_mode_skip_restarts():
    session = playing(new_session(PlaylistStore.single("/music/song.mp3"), PlaybackMode.LOCAL))
    session, effects = transition(session, SkipRequested(), POLICY)

    assert notices(effects) == ["restarting_local"]
    assert session.store.cursor == 0


def test_resolve_failure_notifies_and_moves_on():
    session = playing(youtube_session("a", "b", "c"))
    session, effects = transition(session, TrackFinished(session.epoch), POLICY)
    session, effects = transition(session, StartDue(of_type(effects, ScheduleStart)[0].epoch), POLICY)
    assert session.store.cursor == 1

    error = ResolutionError("b", ResolutionErrorKind.UNAVAILABLE, "Video unavailable")
    session, effects = transition(session, ResolveFailed(session.epoch, error), POLICY)

    notice = of_type(effects, Notify)[0]
    assert notice == Notify("play_failed", {"url": "b"})
    assert session.state == PlayerState.ERRORED
    assert session.store.cursor == 2
    assert of_type(effects, ScheduleStart)[0].delay == 2.0


@pytest.mark.parametrize("kind, key", [
    (ResolutionErrorKind.PROCESSING, "video_processing"),
    (ResolutionErrorKind.BOT_DETECTION, "bot_detected"),
    (ResolutionErrorKind.NETWORK, "play_failed"),
])
def test_failure_notice_depends_on_kind(kind, key):
    session, effects = transition(youtube_session(), PlayRequested(), POLICY)
    _, effects = transition(session, ResolveFailed(session.epoch, ResolutionError("a", kind)), POLICY)

    assert notices(effects)[0] == key


def test_playback_error_uses_playback_notice():
    session = playing(youtube_session())
    session, effects = transition(session, TrackFinished(session.epoch, PlaybackError("ffmpeg died")), POLICY)

    assert notices(effects)[0] == "playback_error"
    assert session.store.cursor == 1


def fail_resolves(session, times, policy=POLICY):
    """Feed `times` resolve failures in a row, firing each retry timer in between."""
    error = ResolutionError("x", ResolutionErrorKind.UNAVAILABLE)
    effects = []
    for _ in range(times):
        if session.state == PlayerState.ERRORED:
            session, _ = transition(session, StartDue(session.epoch), policy)
        session, effects = transition(session, ResolveFailed(session.epoch, error), policy)
    return session, effects


def test_every_track_failing_stops_and_tears_down():
    session, _ = transition(youtube_session("a", "b"), PlayRequested(), POLICY)

    # Three passes over two entries: the sixth failure in a row gives up
    session, effects = fail_resolves(session, 5)
    assert session.state == PlayerState.ERRORED
    assert not of_type(effects, RequestTeardown)

    session, effects = fail_resolves(session, 1)
    assert "all_failed" in notices(effects)
    assert session.state == PlayerState.STOPPED
    assert of_type(effects, RequestTeardown)


def test_single_youtube_entry_retries_after_resolve_failure():
    session, _ = transition(youtube_session("a"), PlayRequested(), POLICY)
    session, effects = fail_resolves(session, 1)

    assert session.state == PlayerState.ERRORED
    assert session.store.cursor == 0
    assert of_type(effects, ScheduleStart) == [ScheduleStart(session.epoch, 2.0)]
    assert not of_type(effects, RequestTeardown)


def test_failure_passes_never_below_two():
    policy = PlaybackPolicy(failure_passes=1)
    session, _ = transition(youtube_session("a"), PlayRequested(), policy)

    session, _ = fail_resolves(session, 1, policy)
    assert session.state == PlayerState.ERRORED

    session, effects = fail_resolves(session, 1, policy)
    assert session.state == PlayerState.STOPPED
    assert "all_failed" in notices(effects)


def test_local_playback_error_restarts_file():
    session = playing(new_session(PlaylistStore.single("local/song.mp3"), PlaybackMode.LOCAL))

    for _ in range(5):
        session, effects = transition(session, TrackFinished(session.epoch, PlaybackError("ffmpeg hiccup")), POLICY)

        assert session.state == PlayerState.ERRORED
        assert notices(effects) == ["local_failed"]
        assert of_type(effects, ScheduleStart) == [ScheduleStart(session.epoch, 2.0)]
        assert not of_type(effects, RequestTeardown)

        session, effects = transition(session, StartDue(session.epoch), POLICY)
        assert of_type(effects, ResolveTrack)[0].reference == "local/song.mp3"
        track = ResolvedTrack("local/song.mp3", "local/song.mp3", "song", is_local=True)
        session, _ = transition(session, TrackResolved(session.epoch, track), POLICY)


def test_playback_errors_do_not_count_toward_giving_up():
    session = playing(youtube_session("a"))
    for _ in range(10):
        session, effects = transition(session, TrackFinished(session.epoch, PlaybackError("link dropped")), POLICY)
        assert session.state == PlayerState.ERRORED
        assert session.failures == 0
        session, _ = transition(session, StartDue(session.epoch), POLICY)
        session, _ = transition(session, TrackResolved(session.epoch, ResolvedTrack("a", "a", "A")), POLICY)


def test_success_resets_failure_count():
    session, _ = transition(youtube_session("a", "b"), PlayRequested(), POLICY)
    session, effects = transition(session, ResolveFailed(session.epoch, ResolutionError("a", ResolutionErrorKind.NETWORK)), POLICY)
    session, effects = transition(session, StartDue(of_type(effects, ScheduleStart)[0].epoch), POLICY)
    session, _ = transition(session, TrackResolved(session.epoch, ResolvedTrack("b", "b", "B")), POLICY)

    assert session.failures == 0


def test_stop_clears_session():
    session = playing(youtube_session())
    session, _ = transition(session, SkipRequested(), POLICY)
    session, effects = transition(session, StopRequested(), POLICY)

    assert session.state == PlayerState.STOPPED
    assert session.store.cursor == 0
    assert session.current_title is None
    assert of_type(effects, RequestTeardown)


def test_stop_without_teardown_when_stopped_is_noop():
    session = youtube_session()
    after, effects = transition(session, StopRequested(teardown=False), POLICY)

    assert after == session
    assert effects == []


def test_suspend_holds_playback_until_resumed():
    session = playing(youtube_session())
    session, effects = transition(session, PlaybackSuspended(), POLICY)

    assert session.suspended
    assert of_type(effects, StopAudio)

    # Timers that fire while suspended do nothing
    after, effects = transition(session, StartDue(session.epoch), POLICY)
    assert effects == []

    session, effects = transition(session, PlaybackResumed(), POLICY)
    assert not session.suspended
    assert of_type(effects, ResolveTrack)[0].reference == "a"


def test_resume_when_not_suspended_is_noop():
    session = playing(youtube_session())
    after, effects = transition(session, PlaybackResumed(), POLICY)

    assert after == session
    assert effects == []


def test_unknown_event_rejected():
    with pytest.raises(TypeError):
        transition(youtube_session(), object(), POLICY)


def test_every_async_effect_carries_current_epoch():
    session, effects = transition(youtube_session(), PlayRequested(), POLICY)
    assert of_type(effects, ResolveTrack)[0].epoch == session.epoch

    session, effects = transition(session, TrackResolved(session.epoch, ResolvedTrack("a", "a", "A")), POLICY)
    assert of_type(effects, StreamTrack)[0].epoch == session.epoch
    assert of_type(effects, Log)
