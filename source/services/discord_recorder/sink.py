import logging
import threading

import discord

from source.services.ffmpeg_manager.manager import FFmpegConversionStream

logger = logging.getLogger(__name__)


class MemberAudioSink(discord.sinks.Sink):
    """
    Pycord sink that forwards a single member's decoded PCM into a transcoder.

    write() is called from the voice client's decoder thread with 48 kHz stereo
    s16le frames. Frames from every other speaker are dropped.
    """

    def __init__(self, member_id: int, stream: FFmpegConversionStream, *, filters=None):
        super().__init__(filters=filters)
        self.member_id = member_id
        self.stream = stream

        self.bytes_forwarded = 0
        self.frames_dropped = 0
        self._lock = threading.Lock()

    def init(self, vc):
        self.vc = vc
        super().init(vc)

    @discord.sinks.Filters.container
    def write(self, data, user):
        if self.finished:
            return
        if user != self.member_id:
            with self._lock:
                self.frames_dropped += 1
            return

        self.stream.push_to_stream(data)
        with self._lock:
            self.bytes_forwarded += len(data)

    def cleanup(self):
        # The transcoder is closed by the recorder, not here
        self.finished = True
        logger.debug(
            f"MemberAudioSink for {self.member_id} finished: {self.bytes_forwarded} bytes "
            f"forwarded, {self.frames_dropped} frames from other speakers dropped"
        )
