"""Loading of test session results and the web dashboard that serves them."""