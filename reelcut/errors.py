"""Error taxonomy shared by the planner, renderers, jobs and the export pipeline."""


class ReelcutError(Exception):
    pass


class PlanningError(ReelcutError):
    """The source has no usable streams, or the edits leave nothing to export."""


class RenderError(ReelcutError):
    """Cue data could not be turned into an overlay script."""


class ProcessError(ReelcutError):
    """ffmpeg exited non-zero or could not be launched."""


class ExportCancelled(ReelcutError):
    pass


class ExportIOError(ReelcutError):
    """Creating, renaming or deleting an export file failed."""
