"""mr-pilot - AI code review for GitLab Merge Requests and GitHub Pull Requests.

Fetch the diff of a merge request or pull request, send it to an LLM and
report a structured review (goal status, score, issues, remarks). The same
review is exposed as an MCP tool by an HTTP server that can run standalone,
as a proxy that relays tool invocations to a remote worker, or as that worker.

Exports:
    __version__: str - The current version of the mr-pilot package.

Submodules:
    cli: Command-line entry points for reviews and the MCP server.
    config: Configuration constants and environment-driven settings.
    review: Review pipeline (fetch, prompt, analyze, parse, comment).
    server: HTTP/SSE front-end for MCP clients.
    dispatcher: Method-name to handler registry for MCP calls.
    proxy: Dispatcher/worker relay over a persistent websocket channel.
    ui: Terminal output utilities.
"""

__version__ = "1.0.0"
