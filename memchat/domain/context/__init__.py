 # This module handles Context assembly for one exchange

# +---------------------+        +---------------------------+
# |  Short-term memory  |        |     Long-term memory      |
# |---------------------|        |---------------------------|
# | Last 20 turns,      |        | Archived 4-turn chunks,   |
# | verbatim, oldest    |        | embedded, one namespace   |
# | first               |        | per owner                 |
# +---------------------+        +---------------------------+
#          |                                  |
#          |                     top 5, score >= 0.7
#          |                                  |
#          v                                  v
# +------------------------------------------------------+
# |                       Context                        |
# |------------------------------------------------------|
# | Persona instruction                                  |
# | Memory preamble + fragments joined by "\n---\n"      |
# | Window turns                                         |
# | Inbound message (last)                               |
# +------------------------------------------------------+
#         |
#         v
#   [Generator]
#
# Turns older than the window are rolled into long-term memory
# after the exchange, in the background (archive_engine).
