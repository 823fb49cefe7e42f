"""
Text embeddings using sentence-transformers.

Lazy-loads the SentenceTransformer model on first use to avoid slow startup.
Model encode() runs in a thread executor to avoid blocking the asyncio event loop.
"""

import asyncio
import logging
import struct
import threading

logger = logging.getLogger(__name__)

MODEL_NAME = "all-MiniLM-L6-v2"
EMBEDDING_DIM = 384

# Module-level singleton + lock: prevents concurrent model initialisation from
# the thread executor, which causes "Artifact already registered" errors in the
# HuggingFace tokenizers library when two threads try to load the same
# precompiled tokenizer simultaneously.
_model_instance = None
_model_lock = threading.Lock()


def _load_model() -> "SentenceTransformer":  # noqa: F821
    """Load and warm up the SentenceTransformer (must be called under _model_lock)."""
    from sentence_transformers import SentenceTransformer

    logger.info("Loading SentenceTransformer model: %s …", MODEL_NAME)
    model = SentenceTransformer(MODEL_NAME)
    # Warm-up while we still hold the lock, so concurrent callers never race
    # during first-use compile.
    model.encode("warmup", normalize_embeddings=True)
    logger.info("Model loaded and warmed up")
    return model


def vec_bytes(embedding: list[float]) -> bytes:
    """Serialize float list to little-endian float32 bytes for sqlite-vec."""
    return struct.pack(f"<{len(embedding)}f", *embedding)


class Embedder:
    """embed(text) -> normalised 384-dim float vector."""

    model_name = MODEL_NAME
    dimensions = EMBEDDING_DIM

    def _get_model(self):
        """Return the module-level SentenceTransformer singleton (thread-safe)."""
        global _model_instance
        if _model_instance is None:
            with _model_lock:
                if _model_instance is None:  # double-checked locking
                    _model_instance = _load_model()
        return _model_instance

    async def embed(self, text: str) -> list[float]:
        """Return a float32 embedding vector for `text` (runs in thread executor)."""
        loop = asyncio.get_running_loop()

        def _do_encode():
            return self._get_model().encode(text, normalize_embeddings=True).tolist()

        return await loop.run_in_executor(None, _do_encode)
