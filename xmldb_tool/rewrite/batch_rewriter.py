"""
Batch rewriting of one field across many rows through a text service.

Values are sent in batches joined by a delimiter under the prompt configured for
``<table>@<field>``; the reply is split back on the same delimiter. Batches run on a
thread pool; a failing call is retried with linearly increasing delay and a batch
that never succeeds is cached as an empty answer so later runs skip it.
"""

import logging
import time
from multiprocessing.pool import ThreadPool
from typing import Callable, Dict, List, Optional, Sequence

from ..exceptions import TextServiceError
from ..config.processing_defaults import ProcessingDefaults
from ..utils import chunked
from .response_cache import AiResponseCache
from .text_service import TextService


DELIMITER = "!@#"
DEFAULT_BATCH_SIZE = 100


def build_batch_prompt(inputs: Sequence[str], instruction: str) -> str:
    return f"{instruction}:\n" + DELIMITER.join(inputs)


def parse_batch_result(response: str, expected_count: int) -> List[str]:
    """Split a batch reply, padding missing parts with empty strings."""
    parts = [part.strip() for part in response.split(DELIMITER)]
    return [parts[i] if i < len(parts) else '' for i in range(expected_count)]


class BatchFieldRewriter:
    """
    Rewrites the values of one field with a text service.

    Args:
        text_service: Service answering the batch prompts
        config_manager: Source of ``ai.promptKey.<table>@<field>`` instructions
        cache: Response cache; a private one is created when omitted
        batch_size: Values per prompt
        workers: Size of the batch thread pool
        max_retry_attempts: Calls per batch before giving up
        retry_delay_seconds: Base delay; attempt n waits n times this long
        sleep: Delay function, injectable for tests
    """

    def __init__(self, text_service: TextService, config_manager=None,
                 cache: Optional[AiResponseCache] = None,
                 batch_size: int = DEFAULT_BATCH_SIZE,
                 workers: int = ProcessingDefaults.WORKERS,
                 max_retry_attempts: int = ProcessingDefaults.MAX_RETRY_ATTEMPTS,
                 retry_delay_seconds: float = ProcessingDefaults.RETRY_DELAY_SECONDS,
                 sleep: Callable[[float], None] = time.sleep):
        if batch_size <= 0:
            raise ValueError("batch_size must be positive")
        self.logger = logging.getLogger(__name__)
        self.text_service = text_service
        self.config_manager = config_manager
        self.cache = cache if cache is not None else AiResponseCache()
        self.batch_size = batch_size
        self.workers = workers
        self.max_retry_attempts = max(1, max_retry_attempts)
        self.retry_delay_seconds = retry_delay_seconds
        self.sleep = sleep

    def instruction_for(self, table_name: str, field_name: str) -> str:
        if self.config_manager is None:
            return ''
        return str(self.config_manager.get_property(f"ai.promptKey.{table_name}@{field_name}", '') or '')

    def rewrite_field(self, table_name: str, field_name: str, values: Sequence[Optional[str]]) -> List[str]:
        """
        Rewrite ``values`` of ``table_name.field_name``.

        Returns:
            New values in input order; entries the service did not answer keep
            their original value
        """
        originals = ['' if value is None else str(value) for value in values]
        if not originals:
            return []
        instruction = self.instruction_for(table_name, field_name)
        batches = list(chunked(originals, self.batch_size))

        with ThreadPool(processes=min(self.workers, len(batches))) as pool:
            async_results = [pool.apply_async(self._rewrite_batch, (batch, instruction)) for batch in batches]
            rewritten_batches = [async_result.get() for async_result in async_results]

        result = []
        changed = 0
        for batch, rewritten in zip(batches, rewritten_batches):
            for original, new_value in zip(batch, rewritten):
                if new_value and new_value != original:
                    changed += 1
                    result.append(new_value)
                else:
                    result.append(original)
        self.logger.info(f"Rewrote {changed} of {len(originals)} values of {table_name}.{field_name}")
        return result

    def rewrite_rows(self, rows: List[Dict[str, str]], table_name: str, field_name: str) -> None:
        """Rewrite ``field_name`` in place across ``rows``."""
        new_values = self.rewrite_field(table_name, field_name, [row.get(field_name) for row in rows])
        for row, value in zip(rows, new_values):
            if field_name in row or value:
                row[field_name] = value

    def _rewrite_batch(self, batch: List[str], instruction: str) -> List[str]:
        prompt = build_batch_prompt(batch, instruction)
        response = self.cache.get(prompt)
        if response is None:
            response = self._call_with_retries(prompt)
            self.cache.put(prompt, response)
        if not response:
            self.logger.error(f"No rewrite for batch of {len(batch)} values, keeping originals")
            return list(batch)
        return parse_batch_result(response, len(batch))

    def _call_with_retries(self, prompt: str) -> str:
        for attempt in range(1, self.max_retry_attempts + 1):
            try:
                started = time.time()
                response = self.text_service.chat(prompt)
                self.logger.debug(f"Text service call took {(time.time() - started) * 1000:.0f}ms")
                if response:
                    return response
                self.logger.warning(f"Empty reply on attempt {attempt}/{self.max_retry_attempts}")
            except TextServiceError as e:
                self.logger.warning(f"Text service failed on attempt {attempt}/{self.max_retry_attempts}: {e}")
            if attempt < self.max_retry_attempts:
                self.sleep(self.retry_delay_seconds * attempt)

        self.logger.error(f"Giving up on prompt after {self.max_retry_attempts} attempts")
        return ''
