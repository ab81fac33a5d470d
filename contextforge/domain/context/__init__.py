# This module handles context assembly

# +---------------------+
# |   Content Store     |   (Persistent, zoned, external)
# |---------------------|
# | PERMANENT items     |   changes least often
# | STABLE items        |
# | WORKING items       |   changes most often
# +---------------------+

# +---------------------+
# |   Conversation      |   (Ephemeral, per surface)
# |---------------------|
# | Prior turns         |
# | Active skills       |
# | New user input      |
# +---------------------+

#    \    /
#     \  /
#      \/
# +------------------------------+
# |       Assembled prompt       |   (Built fresh every turn)
# |------------------------------|
# | System instruction slot      |
# | PERMANENT -> STABLE ->       |
# |   WORKING                    |   <- shared prefix across turns
# | Ephemeral injections         |
# | History, oldest first        |
# | New user input               |
# +------------------------------+
#         |
#         v
#   [Direct / Relayed transport]

from .context_assembler import AssembledPrompt, PromptSegment, assemble, context_stats, extract_system_instruction
from .content_store import ContentStore, InMemoryContentStore
from .skills import EphemeralSkill, SkillRegistry

__all__ = [
    "AssembledPrompt",
    "PromptSegment",
    "assemble",
    "context_stats",
    "extract_system_instruction",
    "ContentStore",
    "InMemoryContentStore",
    "EphemeralSkill",
    "SkillRegistry",
]
