"""Hybrid CJK / WordPiece tokenizer for BERT-family embedding models.

CJK ideographs become single-character tokens; every other run of
characters is split on whitespace and punctuation and then broken into
subwords with greedy longest-match-first WordPiece lookup.
"""

from __future__ import annotations

import unicodedata
from pathlib import Path

from loguru import logger

PAD_TOKEN = "[PAD]"
UNK_TOKEN = "[UNK]"
CLS_TOKEN = "[CLS]"
SEP_TOKEN = "[SEP]"
CONTINUATION_PREFIX = "##"
MAX_CHARS_PER_WORD = 100


def is_cjk(char: str) -> bool:
    cp = ord(char)
    return (
        0x4E00 <= cp <= 0x9FFF
        or 0x3400 <= cp <= 0x4DBF
        or 0x20000 <= cp <= 0x2A6DF
        or 0x2A700 <= cp <= 0x2B73F
        or 0x2B740 <= cp <= 0x2B81F
        or 0x2B820 <= cp <= 0x2CEAF
        or 0xF900 <= cp <= 0xFAFF
        or 0x2F800 <= cp <= 0x2FA1F
    )


def is_punctuation(char: str) -> bool:
    cp = ord(char)
    if 33 <= cp <= 47 or 58 <= cp <= 64 or 91 <= cp <= 96 or 123 <= cp <= 126:
        return True
    return unicodedata.category(char).startswith("P")


def _is_control(char: str) -> bool:
    if char in ("\t", "\n", "\r"):
        return False
    return unicodedata.category(char) in ("Cc", "Cf")


def _strip_accents(text: str) -> str:
    text = unicodedata.normalize("NFD", text)
    return "".join(c for c in text if unicodedata.category(c) != "Mn")


class WordPieceTokenizer:
    """BERT-style tokenizer driven by a ``vocab.txt`` token list."""

    def __init__(self, vocab: dict[str, int], lowercase: bool = True):
        if UNK_TOKEN not in vocab:
            raise ValueError(f"Vocabulary is missing required token {UNK_TOKEN}")
        self._vocab = vocab
        self._lowercase = lowercase
        self.unk_id = vocab[UNK_TOKEN]
        self.pad_id = vocab.get(PAD_TOKEN, 0)
        self.cls_id = vocab.get(CLS_TOKEN, self.unk_id)
        self.sep_id = vocab.get(SEP_TOKEN, self.unk_id)

    @classmethod
    def from_file(cls, vocab_path: str | Path, lowercase: bool = True) -> "WordPieceTokenizer":
        """Load a vocabulary file with one token per line; line number is the id."""
        vocab: dict[str, int] = {}
        with open(vocab_path, encoding="utf-8") as f:
            for index, line in enumerate(f):
                token = line.rstrip("\n").rstrip("\r")
                if token and token not in vocab:
                    vocab[token] = index
        logger.debug(f"Loaded vocabulary: {len(vocab)} tokens from {vocab_path}")
        return cls(vocab, lowercase=lowercase)

    @property
    def vocab_size(self) -> int:
        return len(self._vocab)

    def basic_tokenize(self, text: str) -> list[str]:
        """Split text into words, isolating CJK characters and punctuation."""
        cleaned = []
        for char in text:
            if char in ("\x00", "�") or _is_control(char):
                continue
            cleaned.append(" " if char.isspace() else char)
        text = "".join(cleaned)

        if self._lowercase:
            text = _strip_accents(text.lower())

        words: list[str] = []
        current: list[str] = []
        for char in text:
            if char == " ":
                if current:
                    words.append("".join(current))
                    current = []
            elif is_cjk(char) or is_punctuation(char):
                if current:
                    words.append("".join(current))
                    current = []
                words.append(char)
            else:
                current.append(char)
        if current:
            words.append("".join(current))
        return words

    def wordpiece(self, word: str) -> list[str]:
        """Greedy longest-match-first subword split of a single word."""
        if len(word) > MAX_CHARS_PER_WORD:
            return [UNK_TOKEN]

        pieces: list[str] = []
        start = 0
        while start < len(word):
            end = len(word)
            match = None
            while start < end:
                piece = word[start:end]
                if start > 0:
                    piece = CONTINUATION_PREFIX + piece
                if piece in self._vocab:
                    match = piece
                    break
                end -= 1
            if match is None:
                return [UNK_TOKEN]
            pieces.append(match)
            start = end
        return pieces

    def tokenize(self, text: str) -> list[str]:
        tokens: list[str] = []
        for word in self.basic_tokenize(text):
            tokens.extend(self.wordpiece(word))
        return tokens

    def encode(self, text: str, max_length: int) -> list[int]:
        """Encode to ``[CLS] tokens [SEP]`` ids, truncated to ``max_length``."""
        tokens = self.tokenize(text)[: max(0, max_length - 2)]
        ids = [self._vocab.get(t, self.unk_id) for t in tokens]
        return [self.cls_id, *ids, self.sep_id]
