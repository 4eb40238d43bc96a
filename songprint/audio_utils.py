import logging
import numpy as np
from scipy.io import wavfile

from songprint.config import AudioConfig as Config
from songprint.logging_config import setup_logger

logger = setup_logger(__name__, level=logging.INFO)


class AudioSource:
    """
    Sequential source of interleaved PCM samples.

    Iterating a source yields integer samples frame by frame
    (channel 0, channel 1, ..., channel 0, ...). The stream ends when
    the source is exhausted.
    """

    sample_rate = None
    channels = 1

    @property
    def total_duration(self):
        """Length of the source in seconds, or None when unknown"""
        return None

    def __iter__(self):
        raise NotImplementedError


class ArraySource(AudioSource):
    """
    Audio source backed by an in-memory numpy array.

    Args:
        samples: 1-D array (mono) or 2-D array shaped (frames, channels).
            Float arrays are expected in [-1, 1] and scaled to the int16 range.
        sample_rate: Sample rate of the array in Hz
    """

    def __init__(self, samples, sample_rate):
        samples = np.asarray(samples)
        if samples.ndim == 1:
            samples = samples.reshape(-1, 1)
        if samples.ndim != 2 or samples.shape[1] < 1:
            raise ValueError(f"Expected (frames, channels) samples, got shape {samples.shape}")
        if sample_rate <= 0:
            raise ValueError(f"Sample rate must be positive, got {sample_rate}")

        self.frames = to_int16(samples)
        self.sample_rate = int(sample_rate)
        self.channels = self.frames.shape[1]

    @property
    def num_frames(self):
        return self.frames.shape[0]

    @property
    def total_duration(self):
        return self.num_frames / self.sample_rate

    def slice(self, start=0.0, duration=None):
        """
        Skip `start` seconds and keep at most `duration` seconds.

        Returns:
            A new ArraySource over the selected frames
        """
        first = min(self.num_frames, int(round(start * self.sample_rate)))
        last = self.num_frames
        if duration is not None:
            last = min(last, first + int(round(duration * self.sample_rate)))
        return ArraySource(self.frames[first:last], self.sample_rate)

    def __iter__(self):
        return iter(self.frames.reshape(-1).tolist())

    def __repr__(self):
        return (
            f"{type(self).__name__}(frames={self.num_frames}, "
            f"channels={self.channels}, sample_rate={self.sample_rate})"
        )


class WavFileSource(ArraySource):
    """PCM WAV file read with scipy"""

    def __init__(self, filepath):
        sr, audio = wavfile.read(filepath)
        self.filepath = str(filepath)
        super().__init__(audio, sr)


def to_int16(samples):
    """
    Convert PCM samples of any common WAV dtype to int16.

    Args:
        samples: numpy array of int16, int32, uint8 or float samples

    Returns:
        int16 numpy array of the same shape
    """
    if samples.dtype == np.int16:
        return samples
    if samples.dtype == np.int32:
        return (samples >> 16).astype(np.int16)
    if samples.dtype == np.uint8:
        return ((samples.astype(np.int16) - 128) << 8).astype(np.int16)
    if np.issubdtype(samples.dtype, np.floating):
        scaled = np.clip(samples * Config.SAMPLE_MAX, Config.SAMPLE_MIN, Config.SAMPLE_MAX)
        return scaled.astype(np.int16)
    if np.issubdtype(samples.dtype, np.integer):
        clipped = np.clip(samples, Config.SAMPLE_MIN, Config.SAMPLE_MAX)
        return clipped.astype(np.int16)
    raise ValueError(f"Unsupported sample format: {samples.dtype}")


def load_audio(filepath):
    """
    Load a PCM WAV file as an audio source.

    Args:
        filepath: Path to a .wav file

    Returns:
        source: WavFileSource with the file's native rate and channels
    """
    source = WavFileSource(filepath)

    logger.info(f"✓ Loaded with scipy: {filepath}")
    logger.info(f"  Duration: {source.total_duration:.2f} seconds")
    logger.info(f"  Sample rate: {source.sample_rate} Hz")
    logger.info(f"  Channels: {source.channels}")

    return source


class BandpassMonoStream:
    """
    Downsampled, band-pass filtered mono view of an audio source.

    For every output sample `downsample_ratio` frames are read from the
    source; only the last one is kept (averaged across channels) and run
    through a high-pass then low-pass single-pole filter. When the source
    rate is not a multiple of the target rate the remainder is ignored, so
    the output runs slightly longer than an exact resampling would.

    The stream is single pass: iterate a fresh instance to start over.
    """

    channels = 1

    def __init__(
        self,
        source,
        target_sample_rate=Config.TARGET_SAMPLE_RATE,
        hp_coef=Config.HP_COEF,
        lp_coef=Config.LP_COEF,
    ):
        if target_sample_rate <= 0 or not source.sample_rate or source.sample_rate <= 0:
            raise ValueError(
                f"Invalid sample rates: source={source.sample_rate}, target={target_sample_rate}"
            )

        self.source = source
        self.source_sample_rate = source.sample_rate
        self.sample_rate = target_sample_rate
        self.source_channels = source.channels
        self.downsample_ratio = source.sample_rate // target_sample_rate
        if self.downsample_ratio < 1:
            raise ValueError(
                f"Cannot downsample {source.sample_rate} Hz to {target_sample_rate} Hz"
            )

        remainder = source.sample_rate % target_sample_rate
        if remainder:
            logger.debug(
                f"Downsample ratio {source.sample_rate}/{target_sample_rate} truncated "
                f"to {self.downsample_ratio} (remainder {remainder} Hz ignored)"
            )

        self.hp_coef = hp_coef
        self.lp_coef = lp_coef

        # Filter state
        self._x_prev = 0.0
        self._hp_prev = 0.0
        self._lp_prev = 0.0

        self._samples = iter(source)

    @property
    def total_duration(self):
        return self.source.total_duration

    def filter(self, sample):
        """Apply the band-pass filter to one sample and update the state."""
        x = float(sample)

        # High-pass (removes ~<20 Hz)
        hp = self.hp_coef * (self._hp_prev + x - self._x_prev)
        self._x_prev = x
        self._hp_prev = hp

        # Low-pass (removes ~>5 kHz)
        lp = self.lp_coef * hp + (1.0 - self.lp_coef) * self._lp_prev
        self._lp_prev = lp

        return int(min(Config.SAMPLE_MAX, max(Config.SAMPLE_MIN, lp)))

    def _next_frame_sum(self):
        total = 0
        for _ in range(self.source_channels):
            total += next(self._samples)
        return total

    def __iter__(self):
        return self

    def __next__(self):
        # Discard frames dropped by the decimation
        for _ in range(self.downsample_ratio - 1):
            for _ in range(self.source_channels):
                next(self._samples)

        if self.source_channels == 1:
            sample = next(self._samples)
        else:
            # Integer mean truncated toward zero
            sample = int(self._next_frame_sum() / self.source_channels)

        return self.filter(sample)
