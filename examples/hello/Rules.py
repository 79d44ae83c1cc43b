# Build with `strata -C examples/hello` (or `strata -C examples/hello debug`).
rules.sources("hello.c")
rules.targets("hello")
rules.depends("hello", "greet/libgreet.a")
rules.flags("c", "-Wall", "-Wextra")
