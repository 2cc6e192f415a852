"""
Audio conversion between telephony and speech-model formats.

- codec: G.711 mu-law encode/decode through static lookup tables, 8 kHz -> 16 kHz
  linear interpolation and filtered 24 kHz -> 8 kHz decimation.

Usage examples:
```python
from voice_bridge.audio.codec import mulaw8k_to_pcm16k, pcm24k_to_mulaw8k

pcm16k = mulaw8k_to_pcm16k(mulaw_bytes)   # caller audio for the model
mulaw = pcm24k_to_mulaw8k(model_pcm)       # model audio for the caller
```
"""
