#
# Copyright Elasticsearch B.V. and/or licensed to Elasticsearch B.V. under one
# or more contributor license agreements. Licensed under the Elastic License 2.0;
# you may not use this file except in compliance with the Elastic License 2.0.
#
import io
import logging
import sys

import pytest
from aioresponses import aioresponses

import dag_insights.logger


class Logger(logging.Handler):
    """Collects the records emitted by the `dag_insights` logger."""

    def __init__(self):
        super().__init__(logging.DEBUG)
        self.records = []

    def emit(self, record):
        self.records.append(record)

    @property
    def logs(self):
        return [record.getMessage() for record in self.records]

    def at_level(self, level):
        return [record.getMessage() for record in self.records if record.levelno == level]

    def assert_not_present(self, lines):
        if isinstance(lines, str):
            lines = [lines]
        for msg in lines:
            for log in self.logs:
                if msg in log:
                    raise AssertionError(f"'{msg}' found in {self.logs}")

    def assert_present(self, lines):
        if isinstance(lines, str):
            lines = [lines]
        for msg in lines:
            if not any(msg in log for log in self.logs):
                raise AssertionError(f"'{msg}' not found in {self.logs}")


@pytest.fixture
def patch_logger():
    new_logger = Logger()
    logger = dag_insights.logger.logger
    old_level = logger.level
    logger.addHandler(new_logger)
    logger.setLevel(logging.DEBUG)
    try:
        yield new_logger
    finally:
        logger.removeHandler(new_logger)
        logger.setLevel(old_level)


@pytest.fixture(autouse=True)
def drop_file_handler():
    yield
    handler = dag_insights.logger._file_handler
    if handler is not None:
        dag_insights.logger.logger.removeHandler(handler)
        dag_insights.logger._file_handler = None


@pytest.fixture
def console_stream():
    handler = dag_insights.logger.logger.handlers[0]
    stream = io.StringIO()
    old = handler.setStream(stream)
    try:
        yield stream
    finally:
        handler.setStream(old or sys.stdout)


@pytest.fixture
def mock_responses():
    with aioresponses() as m:
        yield m
