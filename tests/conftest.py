# tests/conftest.py
"""
Shared fixtures and program builders for the whitespace test-suite.

Programs are assembled from the helpers below so tests read as
mnemonics instead of raw tabs and spaces.
"""

import io

import pytest

from encoding import encode_number
from interpreter import Interpreter
from lexer import tokenize

S, T, L = " ", "\t", "\n"


def num(value):
    return encode_number(value) + L


def push(value):
    return S + S + num(value)


def dup():
    return S + L + S


def dup_n(depth):
    return S + T + S + num(depth)


def swap():
    return S + L + T


def discard():
    return S + L + L


def discard_n(count):
    return S + T + L + num(count)


def add():
    return T + S + S + S


def sub():
    return T + S + S + T


def mul():
    return T + S + S + L


def div():
    return T + S + T + S


def mod():
    return T + S + T + T


def store():
    return T + T + S


def retrieve():
    return T + T + T


def label(name):
    return L + S + S + name + L


def call(name):
    return L + S + T + name + L


def jump(name):
    return L + S + L + name + L


def jump_zero(name):
    return L + T + S + name + L


def jump_negative(name):
    return L + T + T + name + L


def ret():
    return L + T + L


def end():
    return L + L + L


def print_char():
    return T + L + S + S


def print_num():
    return T + L + S + T


def read_char():
    return T + L + T + S


def read_num():
    return T + L + T + T


def program(*parts):
    return "".join(parts)


class Captured:
    def __init__(self):
        self.chunks = []

    def __call__(self, text):
        self.chunks.append(text)

    @property
    def text(self):
        return "".join(self.chunks)


def execute(source, stdin="", **kwargs):
    """Tokenize and run ``source``; return the interpreter and its output."""
    output = Captured()
    vm = Interpreter(input_stream=io.StringIO(stdin), output_sink=output, **kwargs)
    vm.run(tokenize(source))
    return vm, output.text


@pytest.fixture
def run():
    return execute
