#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""生成函数（迭代检索的下一轮查询来源）"""

from .generator import GenerateFn, OpenAICompatibleGenerator, passthrough_generate

__all__ = ["GenerateFn", "OpenAICompatibleGenerator", "passthrough_generate"]
