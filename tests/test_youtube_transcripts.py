import json
import os
import subprocess

import pytest

import youtube_transcripts
from error_handling import InvalidRequestError, SourceExtractionError
from youtube_transcripts import (
    Cue,
    extract_video_id,
    fetch_transcript,
    filter_cues,
    join_cues,
    parse_vtt,
    synthetic_transcript,
)

VTT = """WEBVTT
Kind: captions
Language: en

00:00:01.000 --> 00:00:04.000 align:start position:0%
Plants make <c>food</c> from light.

00:00:04.000 --> 00:00:08.500
This is called photosynthesis.

00:01:00.000 --> 00:01:05.000
It happens in chloroplasts.
"""


@pytest.mark.parametrize("value", [
    "dQw4w9WgXcQ",
    "https://www.youtube.com/watch?v=dQw4w9WgXcQ",
    "https://youtube.com/watch?feature=share&v=dQw4w9WgXcQ",
    "https://youtu.be/dQw4w9WgXcQ?t=42",
    "https://www.youtube.com/embed/dQw4w9WgXcQ",
    "https://www.youtube.com/shorts/dQw4w9WgXcQ",
    "  https://m.youtube.com/watch?v=dQw4w9WgXcQ  ",
])
def test_extract_video_id(value):
    assert extract_video_id(value) == "dQw4w9WgXcQ"


@pytest.mark.parametrize("value", ["", "not a url", "https://example.com/watch?v=short"])
def test_extract_video_id_rejects_garbage(value):
    with pytest.raises(InvalidRequestError):
        extract_video_id(value)


def test_parse_vtt_strips_tags_and_reads_times():
    cues = parse_vtt(VTT)

    assert [c.text for c in cues] == [
        "Plants make food from light.",
        "This is called photosynthesis.",
        "It happens in chloroplasts.",
    ]
    assert cues[1].start == 4.0
    assert cues[1].end == 8.5
    assert cues[2].start == 60.0


def test_filter_cues_keeps_overlapping_window():
    cues = parse_vtt(VTT)

    assert [c.start for c in filter_cues(cues, 5, 30)] == [4.0]
    assert [c.start for c in filter_cues(cues, None, 3)] == [1.0]
    assert [c.start for c in filter_cues(cues, 50, None)] == [60.0]
    assert len(filter_cues(cues)) == 3


def test_join_cues_removes_rolling_duplicates():
    cues = [Cue(0, 1, "hello there"), Cue(1, 2, "hello there"), Cue(2, 3, "general")]
    assert join_cues(cues) == "hello there general"


def test_synthetic_transcript_uses_long_descriptions_only():
    info = {"title": "Photosynthesis", "uploader": "Bio Channel", "description": "Short https://x.y"}
    assert synthetic_transcript(info) == "Video Title: Photosynthesis\n\nChannel: Bio Channel"

    info["description"] = "Leaves capture sunlight. " * 10
    assert "Video Description: Leaves capture sunlight." in synthetic_transcript(info)


def test_synthetic_transcript_needs_some_information():
    with pytest.raises(SourceExtractionError):
        synthetic_transcript({})


def fake_yt_dlp(vtt=None, info=None, captions_error=None):
    """subprocess.run stand-in that writes a caption file or prints metadata."""
    def run(cmd, **kwargs):
        if "--dump-json" in cmd:
            if info is None:
                raise subprocess.CalledProcessError(1, cmd, stderr="ERROR: Video unavailable")
            return subprocess.CompletedProcess(cmd, 0, stdout=json.dumps(info), stderr="")
        if captions_error is not None:
            raise captions_error
        if vtt is not None:
            template = cmd[cmd.index("-o") + 1]
            with open(template.replace("%(ext)s", "en.vtt"), "w", encoding="utf-8") as f:
                f.write(vtt)
        return subprocess.CompletedProcess(cmd, 0, stdout="", stderr="")
    return run


def test_fetch_transcript_from_captions(monkeypatch):
    monkeypatch.setattr(youtube_transcripts.subprocess, "run", fake_yt_dlp(vtt=VTT))

    assert fetch_transcript("dQw4w9WgXcQ", 0, 10) == "Plants make food from light. This is called photosynthesis."


def test_fetch_transcript_falls_back_to_metadata(monkeypatch):
    info = {"title": "Photosynthesis explained", "channel": "Bio Channel"}
    monkeypatch.setattr(youtube_transcripts.subprocess, "run", fake_yt_dlp(info=info))

    transcript = fetch_transcript("dQw4w9WgXcQ")
    assert transcript.startswith("Video Title: Photosynthesis explained")


def test_empty_time_window_falls_back_to_metadata(monkeypatch):
    info = {"title": "Photosynthesis explained"}
    monkeypatch.setattr(youtube_transcripts.subprocess, "run", fake_yt_dlp(vtt=VTT, info=info))

    assert fetch_transcript("dQw4w9WgXcQ", 200, 300) == "Video Title: Photosynthesis explained"


def test_fetch_transcript_fails_when_nothing_is_available(monkeypatch):
    monkeypatch.setattr(youtube_transcripts.subprocess, "run",
                        fake_yt_dlp(captions_error=FileNotFoundError("yt-dlp")))

    with pytest.raises(SourceExtractionError, match="yt-dlp is not installed"):
        fetch_transcript("dQw4w9WgXcQ")


def test_temporary_caption_files_are_removed(monkeypatch, tmp_path):
    written = []

    def run(cmd, **kwargs):
        template = cmd[cmd.index("-o") + 1]
        path = template.replace("%(ext)s", "en.vtt")
        written.append(path)
        with open(path, "w", encoding="utf-8") as f:
            f.write(VTT)
        return subprocess.CompletedProcess(cmd, 0, stdout="", stderr="")

    monkeypatch.setattr(youtube_transcripts.subprocess, "run", run)
    fetch_transcript("dQw4w9WgXcQ")

    assert not os.path.exists(written[0])


class FakeWhisperModel:
    def __init__(self, segments):
        self.segments = segments
        self.calls = []

    def transcribe(self, path, language=None, fp16=None):
        self.calls.append((os.path.basename(path), language))
        return {"text": " ".join(s["text"] for s in self.segments), "segments": self.segments}


class FakeWhisper:
    def __init__(self, model):
        self.model = model
        self.loaded = []

    def load_model(self, name, device=None):
        self.loaded.append((name, device))
        return self.model


SEGMENTS = [
    {"start": 0.0, "end": 5.0, "text": " Plants make food from light."},
    {"start": 5.0, "end": 9.0, "text": " This is called photosynthesis."},
    {"start": 60.0, "end": 64.0, "text": " It happens in chloroplasts."},
]


def audio_yt_dlp(commands, info=None):
    """Captions are missing; -x writes an audio file; --dump-json prints metadata."""
    def run(cmd, **kwargs):
        commands.append(cmd)
        if "--dump-json" in cmd:
            if info is None:
                raise subprocess.CalledProcessError(1, cmd, stderr="ERROR: Video unavailable")
            return subprocess.CompletedProcess(cmd, 0, stdout=json.dumps(info), stderr="")
        if "-x" in cmd:
            template = cmd[cmd.index("-o") + 1]
            with open(template.replace("%(ext)s", "mp3"), "wb") as f:
                f.write(b"ID3")
        return subprocess.CompletedProcess(cmd, 0, stdout="", stderr="")
    return run


@pytest.fixture
def fake_whisper(monkeypatch):
    fake = FakeWhisper(FakeWhisperModel(SEGMENTS))
    monkeypatch.setattr(youtube_transcripts, "whisper", fake, raising=False)
    monkeypatch.setattr(youtube_transcripts, "WHISPER_AVAILABLE", True)
    monkeypatch.setattr(youtube_transcripts, "_whisper_models", {})
    return fake


def test_whisper_transcribes_when_captions_are_missing(monkeypatch, fake_whisper):
    commands = []
    monkeypatch.setattr(youtube_transcripts.subprocess, "run", audio_yt_dlp(commands))

    transcript = fetch_transcript("dQw4w9WgXcQ", 0, 10, whisper_model="tiny")

    assert transcript == "Plants make food from light. This is called photosynthesis."
    assert fake_whisper.loaded == [("tiny", "cpu")]
    assert fake_whisper.model.calls == [("dQw4w9WgXcQ_audio.mp3", "en")]
    assert not any("--dump-json" in cmd for cmd in commands)


def test_whisper_model_is_loaded_once(monkeypatch, fake_whisper):
    monkeypatch.setattr(youtube_transcripts.subprocess, "run", audio_yt_dlp([]))

    fetch_transcript("dQw4w9WgXcQ", whisper_model="tiny")
    fetch_transcript("dQw4w9WgXcQ", whisper_model="tiny")

    assert len(fake_whisper.loaded) == 1
    assert len(fake_whisper.model.calls) == 2


def test_whisper_is_skipped_unless_a_model_is_given(monkeypatch, fake_whisper):
    commands = []
    info = {"title": "Photosynthesis explained"}
    monkeypatch.setattr(youtube_transcripts.subprocess, "run", audio_yt_dlp(commands, info=info))

    assert fetch_transcript("dQw4w9WgXcQ") == "Video Title: Photosynthesis explained"
    assert not any("-x" in cmd for cmd in commands)
    assert fake_whisper.loaded == []


def test_missing_whisper_falls_back_to_metadata(monkeypatch):
    monkeypatch.setattr(youtube_transcripts, "WHISPER_AVAILABLE", False)
    info = {"title": "Photosynthesis explained"}
    monkeypatch.setattr(youtube_transcripts.subprocess, "run", audio_yt_dlp([], info=info))

    assert fetch_transcript("dQw4w9WgXcQ", whisper_model="tiny") == "Video Title: Photosynthesis explained"


def test_every_step_failing_names_each_reason(monkeypatch):
    monkeypatch.setattr(youtube_transcripts, "WHISPER_AVAILABLE", False)
    monkeypatch.setattr(youtube_transcripts.subprocess, "run", audio_yt_dlp([]))

    with pytest.raises(SourceExtractionError) as exc_info:
        fetch_transcript("dQw4w9WgXcQ", whisper_model="tiny")

    message = str(exc_info.value)
    assert "No captions available" in message
    assert "pip install openai-whisper" in message
    assert "Video unavailable" in message


def test_whisper_errors_become_source_extraction_errors(monkeypatch, fake_whisper):
    def broken(path, language=None, fp16=None):
        raise RuntimeError("ffmpeg not found")

    monkeypatch.setattr(fake_whisper.model, "transcribe", broken)
    monkeypatch.setattr(youtube_transcripts.subprocess, "run", audio_yt_dlp([]))

    with pytest.raises(SourceExtractionError, match="Whisper transcription failed: ffmpeg not found"):
        youtube_transcripts.transcribe_audio("dQw4w9WgXcQ")


def test_whisper_window_without_speech_is_an_error(monkeypatch, fake_whisper):
    monkeypatch.setattr(youtube_transcripts.subprocess, "run", audio_yt_dlp([]))

    with pytest.raises(SourceExtractionError, match="no text"):
        youtube_transcripts.transcribe_audio("dQw4w9WgXcQ", start_time=200, end_time=300)
