import copy

from .rtcrtpparameters import RTCRtpCodecParameters

DYNAMIC_PAYLOAD_TYPES = range(96, 128)

CODECS: dict[str, list[RTCRtpCodecParameters]] = {
    "audio": [
        RTCRtpCodecParameters(
            mimeType="audio/opus", clockRate=48000, channels=2, payloadType=96
        ),
        RTCRtpCodecParameters(
            mimeType="audio/PCMU", clockRate=8000, channels=1, payloadType=0
        ),
        RTCRtpCodecParameters(
            mimeType="audio/PCMA", clockRate=8000, channels=1, payloadType=8
        ),
    ],
    "video": [
        RTCRtpCodecParameters(mimeType="video/VP8", clockRate=90000, payloadType=97),
        RTCRtpCodecParameters(
            mimeType="video/H264",
            clockRate=90000,
            payloadType=99,
            parameters={
                "level-asymmetry-allowed": "1",
                "packetization-mode": "1",
                "profile-level-id": "42e01f",
            },
        ),
    ],
}


def get_codecs(kind: str) -> list[RTCRtpCodecParameters]:
    return copy.deepcopy(CODECS[kind])


def is_codec_compatible(a: RTCRtpCodecParameters, b: RTCRtpCodecParameters) -> bool:
    if a.mimeType.lower() != b.mimeType.lower() or a.clockRate != b.clockRate:
        return False

    if a.mimeType.lower() == "video/h264":
        # only the packetization mode has to agree, profiles are left to
        # the media stack
        def packetization(c: RTCRtpCodecParameters) -> int:
            return int(c.parameters.get("packetization-mode") or "0")

        try:
            return packetization(a) == packetization(b)
        except ValueError:
            return False

    return True


def find_common_codecs(
    local_codecs: list[RTCRtpCodecParameters],
    remote_codecs: list[RTCRtpCodecParameters],
) -> list[RTCRtpCodecParameters]:
    common = []
    for c in remote_codecs:
        for codec in local_codecs:
            if is_codec_compatible(codec, c):
                codec = copy.deepcopy(codec)
                if c.payloadType in DYNAMIC_PAYLOAD_TYPES:
                    codec.payloadType = c.payloadType
                common.append(codec)
                break
    return common
