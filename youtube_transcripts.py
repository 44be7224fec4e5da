"""
YouTube transcript fetching through the yt-dlp command line tool.

Captions are downloaded as WebVTT, cut to an optional time window and
joined into plain text. Videos without captions can be transcribed
locally with Whisper (optional openai-whisper install) and otherwise
fall back to a short synthetic transcript built from the video's metadata.
"""
import glob
import json
import logging
import os
import re
import subprocess
import tempfile
import threading
from dataclasses import dataclass
from typing import List, Optional

from error_handling import InvalidRequestError, SourceExtractionError

logger = logging.getLogger("quizgen.youtube")

# Optional local transcription
try:
    import whisper
    WHISPER_AVAILABLE = True
except ImportError:
    whisper = None
    WHISPER_AVAILABLE = False

_BARE_ID = re.compile(r"^[a-zA-Z0-9_-]{11}$")
_URL_ID = re.compile(
    r"(?:https?:\/\/)?(?:www\.|m\.)?(?:youtube\.com\/(?:[^\/\n\s]+\/\S+\/|(?:v|e(?:mbed)?|shorts)\/|\S*?[?&]v=)|youtu\.be\/)([a-zA-Z0-9_-]{11})"
)
_TIMESTAMP = re.compile(r"(?:(\d+):)?(\d{1,2}):(\d{2})[.,](\d{3})")
_TAG = re.compile(r"<[^>]+>")
_URL = re.compile(r"https?://\S+")

MIN_DESCRIPTION_CHARS = 100
YT_DLP_TIMEOUT = 120
AUDIO_DOWNLOAD_TIMEOUT = 600

_whisper_models = {}
_whisper_lock = threading.Lock()


@dataclass
class Cue:
    start: float
    end: float
    text: str


def extract_video_id(url_or_id: str) -> str:
    """Video id from a bare id or any common YouTube URL form."""
    url_or_id = (url_or_id or "").strip()
    if _BARE_ID.match(url_or_id):
        return url_or_id
    match = _URL_ID.search(url_or_id)
    if not match:
        raise InvalidRequestError("Invalid YouTube URL or video ID")
    return match.group(1)


def _seconds(timestamp: str) -> float:
    match = _TIMESTAMP.search(timestamp)
    if not match:
        raise ValueError(f"Bad VTT timestamp: {timestamp}")
    hours, minutes, seconds, millis = match.groups()
    return int(hours or 0) * 3600 + int(minutes) * 60 + int(seconds) + int(millis) / 1000


def parse_vtt(content: str) -> List[Cue]:
    """Parse WebVTT text into timed cues with markup removed."""
    cues = []
    current: Optional[Cue] = None
    for raw_line in content.splitlines():
        line = raw_line.strip()
        if '-->' in line:
            start, _, end = line.partition('-->')
            current = Cue(_seconds(start), _seconds(end.split()[0]), "")
            cues.append(current)
        elif not line:
            current = None
        elif current is not None:
            text = _TAG.sub('', line).strip()
            if text:
                current.text = f"{current.text} {text}".strip()
    return [cue for cue in cues if cue.text]


def filter_cues(cues: List[Cue], start_time: Optional[float] = None,
                end_time: Optional[float] = None) -> List[Cue]:
    """Keep cues overlapping [start_time, end_time]; either bound may be open."""
    kept = []
    for cue in cues:
        if start_time is not None and cue.end < start_time:
            continue
        if end_time is not None and cue.start > end_time:
            continue
        kept.append(cue)
    return kept


def join_cues(cues: List[Cue]) -> str:
    # Auto captions repeat each line across rolling cues
    return " ".join(dict.fromkeys(cue.text for cue in cues)).strip()


def _run_yt_dlp(args: List[str], timeout: int = YT_DLP_TIMEOUT) -> subprocess.CompletedProcess:
    try:
        return subprocess.run(["yt-dlp", *args], check=True, capture_output=True, text=True,
                              timeout=timeout)
    except FileNotFoundError:
        raise SourceExtractionError("yt-dlp is not installed")
    except subprocess.TimeoutExpired:
        raise SourceExtractionError("yt-dlp timed out")
    except subprocess.CalledProcessError as e:
        raise SourceExtractionError(f"yt-dlp failed: {(e.stderr or '').strip()[:300]}")


def fetch_captions(video_id: str, start_time: Optional[float] = None,
                   end_time: Optional[float] = None) -> str:
    """Download English captions and return the text inside the time window."""
    url = f"https://www.youtube.com/watch?v={video_id}"
    with tempfile.TemporaryDirectory(prefix="yt_dlp_") as temp_dir:
        _run_yt_dlp([
            "--write-sub",
            "--write-auto-sub",
            "--sub-lang", "en.*,en",
            "--sub-format", "vtt",
            "--skip-download",
            "-o", os.path.join(temp_dir, f"{video_id}.%(ext)s"),
            url,
        ])
        vtt_files = sorted(glob.glob(os.path.join(temp_dir, f"{video_id}*.vtt")))
        if not vtt_files:
            raise SourceExtractionError("No captions available")
        with open(vtt_files[0], 'r', encoding='utf-8') as f:
            cues = parse_vtt(f.read())

    transcript = join_cues(filter_cues(cues, start_time, end_time))
    if not transcript:
        raise SourceExtractionError("No transcript found for the specified time range")
    return transcript


def synthetic_transcript(info: dict) -> str:
    """Stand-in transcript from title, channel and description."""
    parts = []
    if info.get("title"):
        parts.append(f"Video Title: {info['title']}")
    channel = info.get("uploader") or info.get("channel")
    if channel:
        parts.append(f"Channel: {channel}")

    description = _URL.sub('', info.get("description") or "")
    description = re.sub(r"\n{3,}", "\n\n", description).strip()
    if len(description) > MIN_DESCRIPTION_CHARS:
        parts.append(f"Video Description: {description}")

    if not parts:
        raise SourceExtractionError("Unable to generate transcript - no video information available")
    return "\n\n".join(parts)


def fetch_metadata_transcript(video_id: str) -> str:
    completed = _run_yt_dlp(["--dump-json", "--no-warnings", "--skip-download",
                             f"https://www.youtube.com/watch?v={video_id}"])
    try:
        info = json.loads(completed.stdout)
    except ValueError as e:
        raise SourceExtractionError(f"Unreadable video metadata: {e}")
    return synthetic_transcript(info)


def _load_whisper_model(name: str):
    with _whisper_lock:
        if name not in _whisper_models:
            logger.info("Loading Whisper model '%s'", name)
            _whisper_models[name] = whisper.load_model(name, device="cpu")
        return _whisper_models[name]


def transcribe_audio(video_id: str, model_name: str = "tiny", start_time: Optional[float] = None,
                     end_time: Optional[float] = None) -> str:
    """Download the audio track and transcribe it locally with Whisper."""
    if not WHISPER_AVAILABLE:
        raise SourceExtractionError("Whisper not installed. Install with: pip install openai-whisper")

    with tempfile.TemporaryDirectory(prefix="yt_dlp_audio_") as temp_dir:
        _run_yt_dlp([
            "-x",
            "--audio-format", "mp3",
            "--audio-quality", "9",
            "-o", os.path.join(temp_dir, f"{video_id}_audio.%(ext)s"),
            f"https://www.youtube.com/watch?v={video_id}",
        ], timeout=AUDIO_DOWNLOAD_TIMEOUT)
        audio_files = sorted(glob.glob(os.path.join(temp_dir, f"{video_id}_audio.*")))
        if not audio_files:
            raise SourceExtractionError("Audio download produced no file")

        try:
            output = _load_whisper_model(model_name).transcribe(audio_files[0], language="en", fp16=False)
        except Exception as e:
            raise SourceExtractionError(f"Whisper transcription failed: {e}")

    cues = [Cue(float(s["start"]), float(s["end"]), str(s["text"]).strip())
            for s in output.get("segments") or []]
    transcript = join_cues(filter_cues([cue for cue in cues if cue.text], start_time, end_time))
    if not transcript:
        raise SourceExtractionError("Whisper produced no text for the specified time range")
    return transcript


def fetch_transcript(video_id: str, start_time: Optional[float] = None,
                     end_time: Optional[float] = None, whisper_model: Optional[str] = None) -> str:
    """
    Transcript for a video: captions, then Whisper (when a model is given),
    then video metadata.

    Raises:
        SourceExtractionError: no step produced text
    """
    try:
        transcript = fetch_captions(video_id, start_time, end_time)
        logger.info("Fetched captions for %s (%d characters)", video_id, len(transcript))
        return transcript
    except SourceExtractionError as e:
        caption_error = e
        logger.warning("Captions unavailable for %s (%s)", video_id, caption_error)

    whisper_error = None
    if whisper_model:
        try:
            transcript = transcribe_audio(video_id, whisper_model, start_time, end_time)
            logger.info("Transcribed audio for %s with Whisper (%d characters)", video_id, len(transcript))
            return transcript
        except SourceExtractionError as e:
            whisper_error = e
            logger.warning("Whisper transcription failed for %s (%s)", video_id, whisper_error)

    logger.warning("Falling back to video metadata for %s", video_id)
    try:
        transcript = fetch_metadata_transcript(video_id)
    except SourceExtractionError as metadata_error:
        reasons = f"no usable captions ({caption_error})"
        if whisper_error is not None:
            reasons += f", local transcription failed ({whisper_error})"
        raise SourceExtractionError(
            f"Cannot generate questions from this video: {reasons} "
            f"and no video information ({metadata_error}). Paste the video's content instead."
        )
    logger.warning("Using video metadata for %s (%d characters); question quality may be limited",
                   video_id, len(transcript))
    return transcript
