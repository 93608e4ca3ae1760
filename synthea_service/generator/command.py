"""Build the Synthea argument vector for a job.

Order matters: Synthea reads the first bare tokens as state and city, so the
sequence below is kept stable.
"""

from typing import List, Optional, Sequence

from synthea_service.jobs.params import GenerationParameters


def age_range_arg(age_min: Optional[int], age_max: Optional[int]) -> Optional[str]:
    """``10-20``, open-ended ``10-`` / ``-20``, or None."""
    if age_min is None and age_max is None:
        return None
    low = "" if age_min is None else str(age_min)
    high = "" if age_max is None else str(age_max)
    return f"{low}-{high}"


def build_generator_args(
    params: GenerationParameters,
    keep_module_path: Optional[str] = None,
    extra_args: Sequence[str] = (),
) -> List[str]:
    """Arguments that follow the ``java ... -jar <jar>`` prefix."""
    args: List[str] = list(extra_args)
    if keep_module_path:
        args += ["-k", keep_module_path]

    for module in params.custom_modules:
        args += ["-m", module]

    args += ["-p", str(params.population)]

    if params.state:
        args.append(params.state)
        if params.city:
            args.append(params.city)

    if params.gender:
        args += ["-g", params.gender]

    age_range = age_range_arg(params.age_min, params.age_max)
    if age_range is not None:
        args += ["-a", age_range]

    if params.seed is not None:
        args += ["-s", str(params.seed)]
    if params.clinician_seed is not None:
        args += ["-cs", str(params.clinician_seed)]
    if params.reference_date:
        args += ["-r", params.reference_date]

    args.append(f"--exporter.{params.output_format.value}.export=true")
    return args
